import mvcem.tl.fit
